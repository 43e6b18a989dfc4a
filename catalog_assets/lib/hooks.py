"""Action/filter hooks around the asset lifecycle.

Actions run callbacks for their side effects; filters thread a value through
each callback and return the result. Callbacks may be sync or async and run
in priority order, lower first.

Usage:
    from catalog_assets.lib.hooks import AFTER_ASSET_PUT, action, hooks

    @action(AFTER_ASSET_PUT)
    async def purge_cdn(asset, key):
        await cdn.invalidate(key)

    await hooks.do_action(AFTER_ASSET_PUT, asset=asset, key=key)
    content_type = await hooks.apply_filters(ASSET_CONTENT_TYPE, content_type, asset=asset)
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

T = TypeVar("T")


@dataclass(order=True)
class HookHandler:
    """A registered hook handler with priority."""

    priority: int
    callback: Callable = field(compare=False)

    async def call(self, *args: Any, **kwargs: Any) -> Any:
        """Call the handler, awaiting it when it returns a coroutine."""
        result = self.callback(*args, **kwargs)
        if asyncio.iscoroutine(result):
            return await result
        return result


class HookRegistry:
    """Registry of action and filter handlers keyed by hook name."""

    def __init__(self) -> None:
        self._actions: dict[str, list[HookHandler]] = defaultdict(list)
        self._filters: dict[str, list[HookHandler]] = defaultdict(list)

    def add_action(self, hook_name: str, callback: Callable[..., Any], priority: int = 10) -> None:
        self._register(self._actions, hook_name, callback, priority)

    def add_filter(self, hook_name: str, callback: Callable[..., T], priority: int = 10) -> None:
        self._register(self._filters, hook_name, callback, priority)

    def remove_action(self, hook_name: str, callback: Callable[..., Any]) -> bool:
        """Remove an action callback. Returns True if it was registered."""
        return self._unregister(self._actions, hook_name, callback)

    def remove_filter(self, hook_name: str, callback: Callable[..., Any]) -> bool:
        """Remove a filter callback. Returns True if it was registered."""
        return self._unregister(self._filters, hook_name, callback)

    def has_action(self, hook_name: str) -> bool:
        return bool(self._actions.get(hook_name))

    def has_filter(self, hook_name: str) -> bool:
        return bool(self._filters.get(hook_name))

    async def do_action(self, hook_name: str, *args: Any, **kwargs: Any) -> None:
        """Execute every action registered for ``hook_name``."""
        handlers = self._actions.get(hook_name)
        if not handlers:
            return

        from catalog_assets.lib.observability import span

        with span(f"hook.action:{hook_name}", hook_name=hook_name):
            for handler in list(handlers):
                await handler.call(*args, **kwargs)

    async def apply_filters(self, hook_name: str, value: T, *args: Any, **kwargs: Any) -> T:
        """Pass ``value`` through every filter registered for ``hook_name``."""
        handlers = self._filters.get(hook_name)
        if not handlers:
            return value

        from catalog_assets.lib.observability import span

        with span(f"hook.filter:{hook_name}", hook_name=hook_name):
            for handler in list(handlers):
                value = await handler.call(value, *args, **kwargs)
            return value

    def clear(self) -> None:
        """Clear all registered hooks. Useful for testing."""
        self._actions.clear()
        self._filters.clear()

    @staticmethod
    def _register(table, hook_name, callback, priority) -> None:
        table[hook_name].append(HookHandler(priority=priority, callback=callback))
        table[hook_name].sort()

    @staticmethod
    def _unregister(table, hook_name, callback) -> bool:
        handlers = table.get(hook_name, [])
        for i, handler in enumerate(handlers):
            if handler.callback is callback:
                handlers.pop(i)
                return True
        return False


# Global registry used when a component is not given its own
hooks = HookRegistry()


def action(hook_name: str, priority: int = 10) -> Callable[[Callable], Callable]:
    """Decorator registering a function as an action handler on the global registry."""

    def decorator(func: Callable) -> Callable:
        hooks.add_action(hook_name, func, priority)
        return func

    return decorator


def filter(hook_name: str, priority: int = 10) -> Callable[[Callable], Callable]:
    """Decorator registering a function as a filter handler on the global registry."""

    def decorator(func: Callable) -> Callable:
        hooks.add_filter(hook_name, func, priority)
        return func

    return decorator


# Actions
BEFORE_ASSET_PUT = "before_asset_put"
AFTER_ASSET_PUT = "after_asset_put"
AFTER_ASSET_DELETE = "after_asset_delete"
AFTER_OWNER_PURGE = "after_owner_purge"
AFTER_IMAGE_SET_RECONCILE = "after_image_set_reconcile"

# Filters
ASSET_CONTENT_TYPE = "asset_content_type"
