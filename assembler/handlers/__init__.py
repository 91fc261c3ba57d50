"""Container descriptor handlers: merge colliding resources into one entry."""

from assembler.handlers.base import (
    DEFAULT_HANDLER,
    ContainerDescriptorHandler,
    available_handlers,
    register_handler,
    select_handlers,
)

__all__ = [
    "DEFAULT_HANDLER",
    "ContainerDescriptorHandler",
    "available_handlers",
    "register_handler",
    "select_handlers",
]
