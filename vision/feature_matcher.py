import cv2
import numpy as np
import torch
from kornia.feature import DescriptorMatcher

from data_classes.data_classes import Features, MatchSet
from vision.errors import UnsupportedStrategy

MATCHING_STRATEGIES = ('exact', 'approximate')

FLANN_INDEX_KDTREE = 1


class FeatureMatcher:
    def __init__(self, device: str = 'cuda', trees: int = 5, checks: int = 50):
        self.device = device if torch.cuda.is_available() else 'cpu'
        # exact: plain nearest neighbour on L2 distance, computed with torch
        self.exact_matcher = DescriptorMatcher(match_mode='nn').to(self.device)
        self.flann = cv2.FlannBasedMatcher(
            dict(algorithm=FLANN_INDEX_KDTREE, trees=trees),
            dict(checks=checks),
        )

        self._matchers = {
            'exact': self._match_exact,
            'approximate': self._match_approximate,
        }

    def match(self, feat0: Features, feat1: Features, strategy: str) -> MatchSet:
        """Best match in feat1 for every descriptor of feat0"""
        try:
            matcher = self._matchers[strategy]
        except KeyError:
            raise UnsupportedStrategy(strategy) from None

        if len(feat0) == 0 or len(feat1) == 0:
            return MatchSet.empty()
        return matcher(feat0.descriptors, feat1.descriptors)

    def _match_exact(self, desc0: np.ndarray, desc1: np.ndarray) -> MatchSet:
        d0 = torch.from_numpy(desc0).float().to(self.device)
        d1 = torch.from_numpy(desc1).float().to(self.device)

        with torch.no_grad():
            # dists (M, 1), match_idxs (M, 2) [idx in desc0, idx in desc1]
            dists, match_idxs = self.exact_matcher(d0, d1)

        return MatchSet(
            pairs=match_idxs.cpu().numpy().astype(np.int64).reshape(-1, 2),
            distances=dists.cpu().numpy().astype(np.float32).reshape(-1),
        )

    def _match_approximate(self, desc0: np.ndarray, desc1: np.ndarray) -> MatchSet:
        matches = self.flann.match(np.ascontiguousarray(desc0, dtype=np.float32),
                                   np.ascontiguousarray(desc1, dtype=np.float32))
        if not matches:
            return MatchSet.empty()

        return MatchSet(
            pairs=np.array([[m.queryIdx, m.trainIdx] for m in matches], dtype=np.int64),
            distances=np.array([m.distance for m in matches], dtype=np.float32),
        )
