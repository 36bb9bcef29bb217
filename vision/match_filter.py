from data_classes.data_classes import MatchSet

# the minimum distance used as baseline never exceeds this value
MIN_DISTANCE_CEILING = 100.0


def min_distance(matches: MatchSet) -> float:
    """Best distance in the set, capped at MIN_DISTANCE_CEILING"""
    if len(matches) == 0:
        return MIN_DISTANCE_CEILING
    return min(float(matches.distances.min()), MIN_DISTANCE_CEILING)


def filter_good(matches: MatchSet, threshold: float, use_good_only: bool) -> MatchSet:
    """
    Keep matches whose distance is within threshold times the best distance.

    Args:
        matches: Raw matches of one image pair
        threshold: Distance ratio cutoff (2.0 keeps up to twice the best)
        use_good_only: If False, matches are returned unchanged

    Returns:
        Filtered MatchSet (empty input gives empty output)
    """
    if not use_good_only:
        return matches
    if len(matches) == 0:
        return MatchSet.empty()

    return matches.take(matches.distances <= threshold * min_distance(matches))
