from __future__ import annotations


class CalibrationError(ValueError):
    pass


class MalformedCalibration(CalibrationError):
    pass


class MissingIntrinsics(MalformedCalibration):
    pass


class MissingDistortion(MalformedCalibration):
    pass
