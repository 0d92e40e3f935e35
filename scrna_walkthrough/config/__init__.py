"""Walkthrough configuration.

Example Usage
-------------
>>> from scrna_walkthrough.config import WalkthroughConfig
>>> config = WalkthroughConfig.from_yaml("walkthrough.yaml")
>>> config.clustering.resolutions
[0.2, 0.4, 0.8]
"""

from .walkthrough import WalkthroughConfig

__all__ = ["WalkthroughConfig"]
