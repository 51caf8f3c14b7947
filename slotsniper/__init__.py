"""
SlotSniper - Driving Test Slot Sniper

Watches the practical test availability pages in a real browser and claims
released slots before anyone else does.

1. Session engine (slotsniper.engine)
   - Controller with countdown, cooldown gate and click budget
   - Response classifier run inside the network hook
   - Claim workflow across page loads

2. Browser runtime (slotsniper.browser)
   - Playwright page driver and page agent
   - Login, timeout and dialog handling
"""
from .common.config import Config, load_config

__version__ = "1.0.0"

__all__ = [
    "Config",
    "load_config",
]
