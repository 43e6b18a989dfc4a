"""Image set reconciliation run when a catalog item is saved.

The caller declares the image set an owner should end up with; the
reconciler compares it with what is already stored and converges with the
fewest storage operations:

1. Load the previous set (metadata store merged with the backend listing).
2. Diff by file name into creates, updates, deletes and unchanged files.
   An updated name also drops stored renditions it no longer declares.
3. Apply creates and updates first, deletes last, so an interrupted save
   never leaves the owner with fewer images than either set allows.
4. A failed create/update is reported and the loop moves on, whatever it
   raised; load and delete failures are fatal and propagate.

Concurrent saves for the same owner are not serialized here. Callers that
need that must hold their own per-owner lock around :meth:`reconcile`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import BinaryIO, Protocol

from catalog_assets.lib import observability
from catalog_assets.lib.exceptions import AssetNotFound, AssetStorageError
from catalog_assets.lib.hooks import AFTER_IMAGE_SET_RECONCILE, HookRegistry, hooks as default_hooks
from catalog_assets.lib.storage.manager import AssetManager
from catalog_assets.lib.storage.models import (
    Asset,
    AssetOutcome,
    ContentCategory,
    SizeVariant,
    guess_content_type,
)

logger = logging.getLogger(__name__)


class AssetRepository(Protocol):
    """Metadata store recording which assets exist for which owner."""

    async def list_for_owner(
        self,
        tenant_code: str,
        content_category: ContentCategory,
        owner_id: str,
    ) -> list[Asset]:
        ...

    async def record_outcome(self, outcomes: Sequence[AssetOutcome]) -> None:
        ...


@dataclass(frozen=True)
class DesiredImage:
    """One rendition of an image in the caller's desired end state.

    ``content=None`` means "keep whatever is stored under this name".
    """

    file_name: str
    content: BinaryIO | None = None
    size_variant: SizeVariant = SizeVariant.ORIGINAL
    content_type: str | None = None


@dataclass(frozen=True)
class PlannedImage:
    file_name: str
    renditions: tuple[DesiredImage, ...]


@dataclass(frozen=True)
class ReconciliationPlan:
    to_create: tuple[PlannedImage, ...] = ()
    to_update: tuple[PlannedImage, ...] = ()
    to_delete: tuple[str, ...] = ()
    unchanged: tuple[str, ...] = ()
    missing: tuple[str, ...] = ()
    # Stored renditions of an updated name that the desired set no longer declares.
    to_prune: tuple[tuple[str, SizeVariant], ...] = ()


@dataclass(frozen=True)
class ReconciliationFailure:
    file_name: str
    size_variant: SizeVariant
    error_kind: str
    message: str


@dataclass(frozen=True)
class PartialReconciliationFailure:
    """The save went through but some images could not be stored."""

    failures: tuple[ReconciliationFailure, ...]

    @property
    def file_names(self) -> list[str]:
        return list(dict.fromkeys(f.file_name for f in self.failures))


@dataclass
class ReconciliationResult:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    failures: list[ReconciliationFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def partial_failure(self) -> PartialReconciliationFailure | None:
        if not self.failures:
            return None
        return PartialReconciliationFailure(tuple(self.failures))


def plan_reconciliation(
    previous: Iterable[Asset],
    desired: Sequence[DesiredImage],
) -> ReconciliationPlan:
    """Diff the previous and desired image sets by file name.

    An updated name also sheds any stored rendition the desired set no
    longer declares. Pure: neither input is mutated and no stream is touched.
    """
    stored: dict[str, set[SizeVariant]] = {}
    for asset in previous:
        stored.setdefault(asset.file_name, set()).add(asset.size_variant)

    grouped: dict[str, list[DesiredImage]] = {}
    for image in desired:
        grouped.setdefault(image.file_name, []).append(image)

    to_create: list[PlannedImage] = []
    to_update: list[PlannedImage] = []
    to_prune: list[tuple[str, SizeVariant]] = []
    unchanged: list[str] = []
    missing: list[str] = []
    for file_name, renditions in grouped.items():
        with_content = tuple(r for r in renditions if r.content is not None)
        if not with_content:
            (unchanged if file_name in stored else missing).append(file_name)
        elif file_name in stored:
            to_update.append(PlannedImage(file_name, with_content))
            declared = {r.size_variant for r in renditions}
            to_prune.extend(
                (file_name, variant)
                for variant in SizeVariant
                if variant in stored[file_name] and variant not in declared
            )
        else:
            to_create.append(PlannedImage(file_name, with_content))

    to_delete = tuple(sorted(stored.keys() - grouped.keys()))
    return ReconciliationPlan(
        to_create=tuple(to_create),
        to_update=tuple(to_update),
        to_delete=to_delete,
        unchanged=tuple(unchanged),
        missing=tuple(missing),
        to_prune=tuple(to_prune),
    )


class ImageSetReconciler:
    """Converge an owner's stored images onto a declared image set."""

    def __init__(
        self,
        manager: AssetManager,
        repository: AssetRepository,
        *,
        hooks: HookRegistry | None = None,
    ) -> None:
        self._manager = manager
        self._repository = repository
        self._hooks = hooks or default_hooks

    async def load_previous(
        self,
        tenant_code: str,
        content_category: ContentCategory,
        owner_id: str,
    ) -> tuple[list[Asset], list[Asset]]:
        """Return ``(previous, stale)`` for one owner.

        The backend listing decides what physically exists; metadata rows only
        contribute what the listing cannot know (content type, byte length).
        Rows with no object behind them come back as ``stale``.
        """
        recorded = {
            asset.identity: asset
            for asset in await self._repository.list_for_owner(
                tenant_code, content_category, owner_id
            )
        }
        previous = []
        async for asset in self._manager.list_assets(tenant_code, content_category, owner_id):
            previous.append(recorded.pop(asset.identity, asset))
        stale = list(recorded.values())
        for asset in stale:
            logger.info(
                "Metadata lists %s (%s) for owner %s but the backend does not hold it",
                asset.file_name,
                asset.size_variant.value,
                owner_id,
            )
        return previous, stale

    async def reconcile(
        self,
        tenant_code: str,
        content_category: ContentCategory,
        owner_id: str,
        desired: Sequence[DesiredImage],
    ) -> ReconciliationResult:
        content_category = ContentCategory(content_category)
        desired = tuple(desired)
        unconsumed = {id(d.content): d.content for d in desired if d.content is not None}

        try:
            with observability.span(
                "assets.reconcile", tenant_code=tenant_code, owner_id=owner_id
            ):
                previous, stale = await self.load_previous(
                    tenant_code, content_category, owner_id
                )
                plan = plan_reconciliation(previous, desired)
                logger.debug(
                    "Reconciling %s/%s/%s: %d create, %d update, %d delete, %d unchanged",
                    tenant_code,
                    content_category.segment,
                    owner_id,
                    len(plan.to_create),
                    len(plan.to_update),
                    len(plan.to_delete),
                    len(plan.unchanged),
                )
                result = await self._apply(
                    tenant_code, content_category, owner_id, plan, previous, stale, unconsumed
                )
        finally:
            for stream in unconsumed.values():
                stream.close()

        if result.failures:
            logger.warning(
                "Image set for %s/%s saved with %d failed image(s): %s",
                tenant_code,
                owner_id,
                result.failed,
                ", ".join(result.partial_failure.file_names),
            )
            observability.warning(
                "partial image reconciliation",
                tenant_code=tenant_code,
                owner_id=owner_id,
                failed=result.failed,
            )
        await self._hooks.do_action(
            AFTER_IMAGE_SET_RECONCILE,
            tenant_code=tenant_code,
            content_category=content_category,
            owner_id=owner_id,
            result=result,
        )
        return result

    async def _apply(
        self,
        tenant_code: str,
        content_category: ContentCategory,
        owner_id: str,
        plan: ReconciliationPlan,
        previous: list[Asset],
        stale: list[Asset],
        unconsumed: dict[int, BinaryIO],
    ) -> ReconciliationResult:
        keys = self._manager.keys
        if stale:
            await self._repository.record_outcome(
                [AssetOutcome(a, keys.build_identity_key(a.identity), exists=False) for a in stale]
            )

        result = ReconciliationResult(unchanged=len(plan.unchanged))
        for file_name in plan.missing:
            result.failures.append(
                ReconciliationFailure(
                    file_name=file_name,
                    size_variant=SizeVariant.ORIGINAL,
                    error_kind=AssetNotFound.__name__,
                    message="declared without content and nothing is stored under this name",
                )
            )

        owner = (tenant_code, content_category, owner_id)
        outcomes: list[AssetOutcome] = []
        updated: set[str] = set()
        try:
            for image in plan.to_create:
                if await self._store(owner, image, result, outcomes, unconsumed):
                    result.created += 1
            for image in plan.to_update:
                if await self._store(owner, image, result, outcomes, unconsumed):
                    result.updated += 1
                    updated.add(image.file_name)
        finally:
            # Whatever reached storage is recorded, even if the loop was cut short.
            if outcomes:
                await self._repository.record_outcome(outcomes)

        # Deletes run last and are fatal on error: the owner's state is unknown.
        deleted: list[AssetOutcome] = []
        for file_name in plan.to_delete:
            await self._manager.delete_asset(tenant_code, content_category, owner_id, file_name)
            result.deleted += 1
            deleted.extend(
                AssetOutcome(asset, keys.build_identity_key(asset.identity), exists=False)
                for asset in previous
                if asset.file_name == file_name
            )

        prune: dict[str, list[SizeVariant]] = {}
        for file_name, size_variant in plan.to_prune:
            # A failed update keeps its old renditions together.
            if file_name in updated:
                prune.setdefault(file_name, []).append(size_variant)
        for file_name, size_variants in prune.items():
            await self._manager.delete_asset(
                tenant_code, content_category, owner_id, file_name, size_variants=size_variants
            )
            deleted.extend(
                AssetOutcome(asset, keys.build_identity_key(asset.identity), exists=False)
                for asset in previous
                if asset.file_name == file_name and asset.size_variant in size_variants
            )
        if deleted:
            await self._repository.record_outcome(deleted)

        return result

    async def _store(
        self,
        owner: tuple[str, ContentCategory, str],
        image: PlannedImage,
        result: ReconciliationResult,
        outcomes: list[AssetOutcome],
        unconsumed: dict[int, BinaryIO],
    ) -> bool:
        """Write every rendition of one image; stop at its first failure."""
        tenant_code, content_category, owner_id = owner
        keys = self._manager.keys
        for rendition in image.renditions:
            asset = Asset(
                tenant_code=tenant_code,
                content_category=content_category,
                owner_id=owner_id,
                file_name=image.file_name,
                size_variant=rendition.size_variant,
                content_type=rendition.content_type or guess_content_type(image.file_name),
            )
            stream = unconsumed.pop(id(rendition.content), None)
            if stream is None:
                # Same stream object listed twice; it was already written and closed.
                continue
            try:
                stored = await self._manager.put_asset(asset, stream)
            except AssetStorageError as exc:
                logger.warning(
                    "Failed to store %s (%s) for owner %s: %s",
                    image.file_name,
                    rendition.size_variant.value,
                    owner_id,
                    exc,
                )
                error_kind, message = exc.kind, str(exc)
            except Exception as exc:
                # Hooks and custom backends may raise outside the storage taxonomy.
                logger.exception(
                    "Unexpected error storing %s (%s) for owner %s",
                    image.file_name,
                    rendition.size_variant.value,
                    owner_id,
                )
                error_kind, message = type(exc).__name__, str(exc)
            else:
                outcomes.append(
                    AssetOutcome(asset=stored, key=keys.build_identity_key(stored.identity), exists=True)
                )
                continue
            result.failures.append(
                ReconciliationFailure(
                    file_name=image.file_name,
                    size_variant=rendition.size_variant,
                    error_kind=error_kind,
                    message=message,
                )
            )
            return False
        return True
