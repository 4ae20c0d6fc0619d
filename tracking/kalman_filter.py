# kalman_filter.py

class KalmanFilter1D:
    """Scalar Kalman filter with a static process model.

    One instance smooths one axis of one position stream. State stays
    unset until the first measurement arrives.
    """

    def __init__(self, measurement_noise=0.01, process_noise=3.0,
                 state_transition=1.0, control=0.0, observation=1.0):
        self.R = measurement_noise
        self.Q = process_noise
        self.A = state_transition
        self.B = control
        self.C = observation
        self.estimate = None
        self.error_covariance = None

    @property
    def initialized(self):
        return self.estimate is not None

    def update(self, measurement, control_input=0.0):
        if self.estimate is None:
            self.estimate = (1 / self.C) * measurement
            self.error_covariance = (1 / self.C) * self.Q * (1 / self.C)
            return float(self.estimate)

        # predict
        pred_x = self.A * self.estimate + self.B * control_input
        pred_cov = self.A * self.error_covariance * self.A + self.R

        K = pred_cov * self.C / (self.C * pred_cov * self.C + self.Q)

        # correct
        self.estimate = pred_x + K * (measurement - self.C * pred_x)
        self.error_covariance = pred_cov - K * self.C * pred_cov
        return float(self.estimate)
