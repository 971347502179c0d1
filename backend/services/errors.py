"""
Exception taxonomy for the proctoring engine

Camera errors carry a remediation message that is safe to show the operator.
"""


class ProctoringError(Exception):
    """Base class for all engine errors"""


class InvalidInput(ProctoringError):
    """Rejected input, raised before any side effect"""


class SessionStateError(ProctoringError):
    """Operation not valid in the current lifecycle state"""


class BackendUnreachable(ProctoringError):
    """Remote session store could not be reached or answered garbage"""


class CameraError(ProctoringError):
    remediation = "Unable to start the camera. Check the device and retry."

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.remediation)
        self.detail = detail

    @property
    def code(self) -> str:
        return type(self).__name__


class CameraPermissionDenied(CameraError):
    remediation = "Camera access was denied. Allow camera permissions for this application and retry."


class CameraNotFound(CameraError):
    remediation = "No camera was found. Connect a camera and retry."


class CameraBusy(CameraError):
    remediation = "The camera is in use by another application. Close other applications using it and retry."


class CameraConstraintsUnsatisfiable(CameraError):
    remediation = "The camera does not support the requested video settings."


class CameraTimeout(CameraError):
    remediation = "The camera did not start streaming in time. Reconnect the camera and retry."
