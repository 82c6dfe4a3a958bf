from tracker.engine import MatchTracker

__all__ = ["MatchTracker"]
