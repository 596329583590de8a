"""Render-instruction consumers."""

from abc import ABC, abstractmethod

from ..utils import get_logger
from .models import RenderAction, RenderInstruction

logger = get_logger(__name__)


class FeedRenderer(ABC):
    """Receives render instructions from a FeedManager.

    The renderer owns the presentation entirely; instructions arrive in the
    order the feed manager produced them.
    """

    @abstractmethod
    def render(self, instruction: RenderInstruction) -> None:
        pass


class LoggingRenderer(FeedRenderer):
    """Writes every instruction to the log. Used by the command-line browser."""

    def __init__(self):
        self.shown = 0

    def render(self, instruction: RenderInstruction) -> None:
        action = instruction.action
        if action in (RenderAction.ADD_IMAGE, RenderAction.PREPEND_IMAGE):
            image = instruction.image
            self.shown += 1
            prompt = (image.prompt_text or "")[:60]
            logger.info(f"[{self.shown:>4}] {image.id} {prompt} {image.url}")
        elif action is RenderAction.CLEAR_FEED:
            self.shown = 0
            logger.info(f"--- feed: {instruction.key.label if instruction.key else ''} ---")
        elif action is RenderAction.SET_LOADING:
            logger.debug(f"Loading indicator: {'on' if instruction.loading else 'off'}")
        else:
            logger.info(f"{action.value}: {instruction.message or ''}")
