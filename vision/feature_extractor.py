import logging

import cv2
import numpy as np
import torch
from kornia.feature import DISK

from data_classes.data_classes import Features
from vision.errors import UnsupportedVariant

logger = logging.getLogger(__name__)

FEATURE_VARIANTS = ('sift', 'disk')


class FeatureExtractor:
    def __init__(self, max_features: int = 0, device: str = 'cuda'):
        """
        Args:
            max_features: Keypoint cap per image, 0 keeps all SIFT keypoints
            device: Torch device for DISK, falls back to cpu
        """
        self.max_features = max_features
        self.device = device if torch.cuda.is_available() else 'cpu'
        self.sift = cv2.SIFT_create(nfeatures=max_features)
        self.disk = None  # loaded on first use, pulls pretrained weights

        self._extractors = {
            'sift': self._extract_sift,
            'disk': self._extract_disk,
        }

    def extract(self, image: np.ndarray, variant: str) -> Features:
        """Extract keypoints and descriptors from a single image"""
        try:
            extractor = self._extractors[variant]
        except KeyError:
            raise UnsupportedVariant(variant) from None
        return extractor(image)

    def _extract_sift(self, image: np.ndarray) -> Features:
        kps, desc = self.sift.detectAndCompute(image, None)
        if desc is None or len(kps) == 0:
            return Features.empty(dim=128)

        return Features(
            keypoints=np.float32([kp.pt for kp in kps]).reshape(-1, 2),
            descriptors=desc.astype(np.float32),
            scores=np.float32([kp.response for kp in kps]),
        )

    def _extract_disk(self, image: np.ndarray) -> Features:
        if self.disk is None:
            logger.info("Loading DISK on %s", self.device)
            self.disk = DISK.from_pretrained('depth').to(self.device)

        # DISK expects RGB (B, C, H, W) normalized to [0, 1]
        if image.ndim == 2:
            rgb = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
        else:
            rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        img_tensor = torch.from_numpy(rgb).permute(2, 0, 1).unsqueeze(0).float() / 255.0
        img_tensor = img_tensor.to(self.device)

        n = self.max_features if self.max_features > 0 else None
        with torch.no_grad():
            feats = self.disk(img_tensor, n=n, pad_if_not_divisible=True)[0]
            keypoints = feats.keypoints.cpu().numpy().astype(np.float32)  # (N, 2)
            descriptors = feats.descriptors.cpu().numpy().astype(np.float32)  # (N, D)
            scores = feats.detection_scores.cpu().numpy().astype(np.float32)  # (N,)

        if len(keypoints) == 0:
            return Features.empty(dim=descriptors.shape[1] if descriptors.ndim == 2 else 128)
        return Features(keypoints=keypoints.reshape(-1, 2), descriptors=descriptors, scores=scores)
