"""Derive storage keys from asset identities, and parse them back.

Key layout::

    {tenant}/{category}/{owner}/{marker}{file name}

Every free-text component is percent-encoded, so a ``/`` inside an owner id
or file name never creates an extra level, and no segment is ever ``.`` or
``..``. Size variants are encoded as a marker on the file name rather than a
folder level: ``ORIGINAL`` has none, ``LARGE`` is ``L-``, ``SMALL`` is ``S-``.

An ``ORIGINAL`` file name that already starts with a marker (or with the
escape character ``~``) gets one leading ``~``, which :meth:`parse_key`
strips again. Keys are always in this canonical form; anything else is
rejected by :meth:`parse_key` as foreign.
"""

from __future__ import annotations

from urllib.parse import quote, unquote

from catalog_assets.lib.exceptions import InvalidKey
from catalog_assets.lib.storage.models import AssetIdentity, ContentCategory, SizeVariant

SEPARATOR = "/"
ESCAPE = "~"
VARIANT_MARKERS: dict[SizeVariant, str] = {
    SizeVariant.LARGE: "L-",
    SizeVariant.SMALL: "S-",
}
_RESERVED_PREFIXES = (*VARIANT_MARKERS.values(), ESCAPE)


def _encode(component: str, what: str) -> str:
    if not component:
        raise InvalidKey(f"{what} must not be empty")
    encoded = quote(component, safe="")
    if set(encoded) == {"."}:
        encoded = "%2E" * len(encoded)
    return encoded


def _decode(segment: str, what: str, key: str) -> str:
    if not segment:
        raise InvalidKey(f"Key {key!r} has an empty {what}", key=key)
    return unquote(segment)


def _category(value: ContentCategory | str) -> ContentCategory:
    try:
        return ContentCategory(value)
    except ValueError as exc:
        raise InvalidKey(f"Unknown content category: {value!r}") from exc


class AssetKeyBuilder:
    """Stateless mapping between asset identities and storage keys."""

    def build_prefix(
        self,
        tenant_code: str,
        content_category: ContentCategory | str,
        owner_id: str,
    ) -> str:
        """Return the "folder" shared by every asset of one owner.

        The trailing separator keeps owner ``P1`` from matching ``P10``.
        """
        return SEPARATOR.join(
            (
                _encode(tenant_code, "tenant code"),
                _category(content_category).segment,
                _encode(owner_id, "owner id"),
                "",
            )
        )

    def build_key(
        self,
        tenant_code: str,
        content_category: ContentCategory | str,
        owner_id: str,
        file_name: str,
        size_variant: SizeVariant = SizeVariant.ORIGINAL,
    ) -> str:
        prefix = self.build_prefix(tenant_code, content_category, owner_id)
        return prefix + self._file_segment(file_name, SizeVariant(size_variant))

    def build_identity_key(self, identity: AssetIdentity) -> str:
        return self.build_key(*identity)

    def build_variant_key(self, key: str, size_variant: SizeVariant) -> str:
        """Derive the key of another size variant from an existing key."""
        identity = self.parse_key(key)
        return self.build_key(*identity._replace(size_variant=size_variant))

    def parse_key(self, key: str) -> AssetIdentity:
        """Recover the identity a key was built from.

        Raises :class:`InvalidKey` for keys this builder would not produce.
        """
        parts = key.split(SEPARATOR)
        if len(parts) != 4:
            raise InvalidKey(f"Key {key!r} does not have four segments", key=key)

        tenant_seg, category_seg, owner_seg, file_seg = parts
        try:
            category = ContentCategory.from_segment(category_seg)
        except ValueError as exc:
            raise InvalidKey(str(exc), key=key) from exc

        size_variant = SizeVariant.ORIGINAL
        encoded_name = file_seg
        if file_seg.startswith(ESCAPE):
            encoded_name = file_seg[len(ESCAPE):]
        else:
            for variant, marker in VARIANT_MARKERS.items():
                if file_seg.startswith(marker):
                    size_variant = variant
                    encoded_name = file_seg[len(marker):]
                    break

        identity = AssetIdentity(
            tenant_code=_decode(tenant_seg, "tenant code", key),
            content_category=category,
            owner_id=_decode(owner_seg, "owner id", key),
            file_name=_decode(encoded_name, "file name", key),
            size_variant=size_variant,
        )
        if self.build_identity_key(identity) != key:
            raise InvalidKey(f"Key {key!r} is not in canonical form", key=key)
        return identity

    @staticmethod
    def _file_segment(file_name: str, size_variant: SizeVariant) -> str:
        encoded = _encode(file_name, "file name")
        marker = VARIANT_MARKERS.get(size_variant)
        if marker:
            return marker + encoded
        if encoded.startswith(_RESERVED_PREFIXES):
            return ESCAPE + encoded
        return encoded
