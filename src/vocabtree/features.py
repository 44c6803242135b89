"""SIFT descriptor extraction for building datasets from images."""

from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np

SIFT_DIMENSION = 128


@dataclass(frozen=True)
class SiftParams:
    """SIFT detector settings.

    Attributes:
        max_features: Keypoints to retain, best first (0 keeps all)
        num_octave_layers: Layers per octave in the scale space
        contrast_threshold: Discards weak keypoints in low-contrast regions
        edge_threshold: Discards edge-like keypoints. Larger values keep more.
        sigma: Gaussian blur applied to the input at octave 0
    """

    max_features: int = 0
    num_octave_layers: int = 3
    contrast_threshold: float = 0.04
    edge_threshold: float = 11.0
    sigma: float = 1.6


class SiftExtractor:
    """Extracts 128-D SIFT descriptors from grayscale images."""

    def __init__(self, params: SiftParams | None = None) -> None:
        """Initialize the SIFT detector.

        Args:
            params: Detector settings (defaults to SiftParams())
        """
        self.params = params or SiftParams()
        self._sift = cv2.SIFT_create(
            nfeatures=self.params.max_features,
            nOctaveLayers=self.params.num_octave_layers,
            contrastThreshold=self.params.contrast_threshold,
            edgeThreshold=self.params.edge_threshold,
            sigma=self.params.sigma,
        )

    def extract(self, image: np.ndarray, mask: np.ndarray | None = None) -> np.ndarray:
        """Detect keypoints and compute their descriptors.

        Args:
            image: Image (uint8). Color images are converted to grayscale.
            mask: Optional binary mask where 255 = detect, 0 = ignore

        Returns:
            Descriptors, shape (N, 128) float32; (0, 128) if nothing is found

        Example:
            >>> extractor = SiftExtractor(SiftParams(max_features=500))
            >>> descriptors = extractor.extract(grayscale_image)
        """
        if image.ndim == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

        _, descriptors = self._sift.detectAndCompute(image, mask)

        if descriptors is None:
            return np.empty((0, SIFT_DIMENSION), dtype=np.float32)
        return descriptors.astype(np.float32)

    def extract_file(self, path: str | Path) -> np.ndarray:
        """Load an image file and extract its descriptors.

        Raises:
            FileNotFoundError: If the image can't be read
        """
        image = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
        if image is None:
            raise FileNotFoundError(f"Could not read image: {path}")
        return self.extract(image)
