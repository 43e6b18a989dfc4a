from catalog_assets.db.models.asset import AssetRecord

__all__ = ["AssetRecord"]
