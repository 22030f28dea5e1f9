"""Plugin artifact table and deduplicated asynchronous loading.

Contribution declarations name their implementation modules by reference
(``"export"``, ``"preview/renderer"``, ...). Those references are resolved
through an :class:`ArtifactTable`, an explicit mapping from
``(plugin_id, reference)`` to a factory supplied when the plugin is loaded.
A table can optionally fall back to ``"package.module:attribute"`` import
references via :class:`ImportArtifactLoader`.

:class:`DeduplicatedLoader` sits on top of a table: each ``plugin:reference``
key is loaded once, concurrent callers share one in-flight task, and
failures are logged and reported as ``None`` so that a broken plugin cannot
take others down with it.
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, Union

from .exceptions import PluginLoadError

logger = logging.getLogger(__name__)

ArtifactFactory = Callable[[], Union[Any, Awaitable[Any]]]


class ImportArtifactLoader:
    """Resolves ``"package.module:attribute"`` references with :mod:`importlib`.

    A bare module path returns the module itself. Callable attributes are
    returned as-is; callers decide whether to call them.
    """

    def __call__(self, reference: str) -> Any:
        module_path, _, attribute = reference.partition(":")
        if not module_path:
            raise PluginLoadError(f"Invalid import reference '{reference}'", reference=reference)
        try:
            module = importlib.import_module(module_path)
        except ImportError as exc:
            raise PluginLoadError(f"Failed to import module '{module_path}': {exc}",
                                  reference=reference, cause=exc) from exc
        if not attribute:
            return module
        target: Any = module
        for part in attribute.split("."):
            if not hasattr(target, part):
                raise PluginLoadError(f"'{module_path}' has no attribute '{attribute}'",
                                      reference=reference)
            target = getattr(target, part)
        return target


class ArtifactTable:
    """Explicit mapping from ``(plugin_id, reference)`` to artifact factories."""

    def __init__(self, import_loader: Optional[Callable[[str], Any]] = None) -> None:
        self._factories: Dict[Tuple[str, str], ArtifactFactory] = {}
        self._import_loader = import_loader

    def register(self, plugin_id: str, reference: str, factory: ArtifactFactory) -> None:
        self._factories[(plugin_id, reference)] = factory

    def register_plugin(self, plugin_id: str, artifacts: Mapping[str, ArtifactFactory]) -> None:
        for reference, factory in artifacts.items():
            self.register(plugin_id, reference, factory)

    def unregister(self, plugin_id: str) -> None:
        for key in [k for k in self._factories if k[0] == plugin_id]:
            del self._factories[key]

    def has(self, plugin_id: str, reference: str) -> bool:
        return (plugin_id, reference) in self._factories

    async def load(self, plugin_id: str, reference: str) -> Any:
        """Produce the artifact for *reference*.

        Raises:
            PluginLoadError: no factory is known or the factory failed
        """
        factory = self._factories.get((plugin_id, reference))
        try:
            if factory is not None:
                value = factory()
            elif self._import_loader is not None and ":" in reference:
                value = self._import_loader(reference)
            else:
                raise PluginLoadError(f"No artifact registered for '{reference}'",
                                      plugin_id=plugin_id, reference=reference)
            if inspect.isawaitable(value):
                value = await value
        except PluginLoadError as exc:
            if exc.plugin_id is None:
                exc.plugin_id = plugin_id
            raise
        except Exception as exc:
            raise PluginLoadError(f"Artifact factory for '{reference}' failed: {exc}",
                                  plugin_id=plugin_id, reference=reference, cause=exc) from exc
        return value


class DeduplicatedLoader:
    """Loads each ``plugin:reference`` at most once.

    Args:
        table: where artifacts come from
        validate: optional shape check applied to a freshly loaded artifact;
            it returns the value to cache or raises :class:`PluginLoadError`
        kind: label used in log messages
    """

    def __init__(self, table: ArtifactTable,
                 validate: Optional[Callable[[str, Any], Any]] = None,
                 kind: str = "artifact") -> None:
        self._table = table
        self._validate = validate
        self._kind = kind
        self._cache: Dict[str, Any] = {}
        self._errors: Dict[str, str] = {}
        self._pending: Dict[str, "asyncio.Task[Any]"] = {}
        # bumped by forget(); loads started before that are discarded
        self._generations: Dict[str, int] = {}

    @staticmethod
    def key(plugin_id: str, reference: str) -> str:
        return f"{plugin_id}:{reference}"

    async def load(self, plugin_id: str, reference: str) -> Optional[Any]:
        key = self.key(plugin_id, reference)
        if key in self._cache:
            return self._cache[key]

        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load(plugin_id, reference, key))
            self._pending[key] = task
            task.add_done_callback(lambda t, k=key: self._drop_pending(k, t))
        return await task

    def get_loaded(self, plugin_id: str, reference: str) -> Optional[Any]:
        return self._cache.get(self.key(plugin_id, reference))

    def is_loaded(self, plugin_id: str, reference: str) -> bool:
        return self.key(plugin_id, reference) in self._cache

    def get_error(self, plugin_id: str, reference: str) -> Optional[str]:
        """Message of the last failed load of *reference*, if any."""
        return self._errors.get(self.key(plugin_id, reference))

    def forget(self, plugin_id: str) -> None:
        """Drop every cached artifact, recorded failure and pending load of *plugin_id*.

        Loads already in flight still finish for their callers but return
        ``None`` and leave nothing behind.
        """
        prefix = f"{plugin_id}:"
        self._generations[plugin_id] = self._generations.get(plugin_id, 0) + 1
        for store in (self._cache, self._errors, self._pending):
            for key in [k for k in store if k.startswith(prefix)]:
                del store[key]

    def _drop_pending(self, key: str, task: "asyncio.Task[Any]") -> None:
        if self._pending.get(key) is task:
            del self._pending[key]

    async def _load(self, plugin_id: str, reference: str, key: str) -> Optional[Any]:
        generation = self._generations.get(plugin_id, 0)
        try:
            value = await self._table.load(plugin_id, reference)
            if self._validate is not None:
                value = self._validate(plugin_id, value)
        except PluginLoadError as exc:
            if self._is_stale(plugin_id, generation, key):
                return None
            logger.error("Failed to load %s %s: %s", self._kind, key, exc)
            self._errors[key] = exc.message
            return None
        except Exception as exc:
            if self._is_stale(plugin_id, generation, key):
                return None
            logger.error("Invalid %s %s: %s", self._kind, key, exc)
            self._errors[key] = str(exc)
            return None

        if self._is_stale(plugin_id, generation, key):
            return None
        self._errors.pop(key, None)
        self._cache[key] = value
        logger.debug("Loaded %s %s", self._kind, key)
        return value

    def _is_stale(self, plugin_id: str, generation: int, key: str) -> bool:
        if self._generations.get(plugin_id, 0) == generation:
            return False
        logger.debug("Discarding %s %s loaded after its plugin was forgotten", self._kind, key)
        return True
