"""Umbrella Review Pipeline.

Tools for deriving log odds ratios from reported confidence intervals
and pooling them with a random‑effects model.
"""

__version__ = "0.1.0"
