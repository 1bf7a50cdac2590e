# pose_sync/processing/one_euro_filter.py
import numpy as np

class OneEuroFilter:
    """
    A vectorized One-Euro filter for smoothing keypoint coordinates.
    Timestamps are in seconds and must be non-decreasing between resets.
    """
    def __init__(self, min_cutoff=0.5, beta=0.05, d_cutoff=1.0):
        self.min_cutoff = min_cutoff
        self.beta = beta
        self.d_cutoff = d_cutoff
        self.reset()

    def reset(self):
        self.x_prev = None
        self.dx_prev = None
        self.t_prev = None

    @staticmethod
    def _alpha(te, cutoff):
        r = 2 * np.pi * cutoff * te
        return r / (r + 1)

    def __call__(self, x, t):
        x = np.asarray(x, dtype=float)
        if self.t_prev is None or self.x_prev.shape != x.shape:
            self.t_prev = t
            self.x_prev = x
            self.dx_prev = np.zeros_like(x)
            return x

        te = t - self.t_prev
        if te < 1e-6:
            return self.x_prev

        # Filter for the derivative
        alpha_d = self._alpha(te, self.d_cutoff)
        dx_hat = alpha_d * ((x - self.x_prev) / te) + (1 - alpha_d) * self.dx_prev

        # Filter for the value
        alpha = self._alpha(te, self.min_cutoff + self.beta * np.abs(dx_hat))
        x_hat = alpha * x + (1 - alpha) * self.x_prev

        self.x_prev, self.dx_prev, self.t_prev = x_hat, dx_hat, t
        return x_hat
