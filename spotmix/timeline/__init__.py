from spotmix.timeline.policies import PlacementPolicy
from spotmix.timeline.resolver import resolve_timeline

__all__ = ["PlacementPolicy", "resolve_timeline"]
