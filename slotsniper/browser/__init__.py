"""
Browser side of SlotSniper: page driver, selectors and the page agent
"""
from .page import PageDriver, PageRow, PlaywrightPage
from .urls import Selectors, WebPages

__all__ = [
    "PageDriver",
    "PageRow",
    "PlaywrightPage",
    "Selectors",
    "WebPages",
]
