from .node import ProgressNode, RenderLine
from .renderer import NullRenderer, Renderer, RichRenderer, select_renderer
from .stack import ProgressStack

__all__ = [
  "ProgressNode",
  "RenderLine",
  "Renderer",
  "NullRenderer",
  "RichRenderer",
  "select_renderer",
  "ProgressStack",
]
