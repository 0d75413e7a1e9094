"""modhub - web-of-trust scoring and aggregation server client for a mod hub.

modhub provides:
- Trust scores derived from the follow graph of a root identity (wot)
- A health-checked session for the aggregation server (network)
- Shared primitives: errors, cancellation, events, storage, logging (core)
"""

__version__ = "0.1.0"

from . import (
    core as core,
)
from . import (
    network as network,
)
from . import (
    wot as wot,
)
