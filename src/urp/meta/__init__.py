"""Meta‑analysis utilities.

This package derives log odds ratios and standard errors from the
confidence intervals reported by primary studies and pools them with
a random effects model.  It also provides heterogeneity and
publication bias diagnostics and forest/funnel plot rendering.

"""

from .analyzer import MetaAnalyzer  # noqa: F401
from .effects import derive_effect, derive_effects  # noqa: F401
from .exceptions import (  # noqa: F401
    DataLoadError,
    InsufficientDataError,
    InvalidRecordError,
    UmbrellaReviewError,
)
from .forest_plot import create_forest_plot, create_funnel_plot  # noqa: F401
