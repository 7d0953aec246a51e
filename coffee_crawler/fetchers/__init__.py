"""
Page rendering: static httpx fetch with a Playwright fallback for
JavaScript-rendered product pages.
"""

from .render import RenderError, RenderService, get_render_service, is_javascript_rendered

__all__ = [
    "RenderError",
    "RenderService",
    "get_render_service",
    "is_javascript_rendered",
]
