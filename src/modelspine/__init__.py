"""
ModelSpine - client-side data model lifecycle engine.

Register named models with load/save/operation callables, then drive them
through dependency-aware loading, gated saving and arbitrary named
operations while listeners observe or veto each phase.

    from modelspine import ModelOrchestrator

    engine = ModelOrchestrator()
    engine.define("orders", {"load": fetch_orders, "save": post_orders})
    data = await engine.load("orders")
"""

__version__ = "0.1.0"

from modelspine.core import *  # noqa: F401,F403
from modelspine.core import __all__ as _core_all
from modelspine.events import EventsFacade, ListenerHandle, ModelEvent, ModelEventBus, Notification
from modelspine.models import *  # noqa: F401,F403
from modelspine.models import __all__ as _models_all

__all__ = [
    "__version__",
    *_core_all,
    "EventsFacade",
    "ListenerHandle",
    "ModelEvent",
    "ModelEventBus",
    "Notification",
    *_models_all,
]
