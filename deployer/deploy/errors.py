# deployer/deploy/errors.py


class DeployError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"success": False, "error": self.message}


class ConfigNotFound(DeployError):
    status_code = 404

    def __init__(self, service_name: str):
        super().__init__(f"Service {service_name} not configured")
        self.service_name = service_name


class AlreadyExists(DeployError):
    status_code = 409

    def __init__(self, service_name: str):
        super().__init__(f"Service {service_name} already configured; remove it first")
        self.service_name = service_name


class InvalidConfig(DeployError):
    status_code = 400


class InvalidSignature(DeployError):
    status_code = 403

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


class MalformedPayload(DeployError):
    status_code = 400

    def __init__(self, message: str = "Invalid JSON payload"):
        super().__init__(message)


class BuildFailed(DeployError):
    def __init__(self, message: str = "Build process failed"):
        super().__init__(message)


class StartFailed(DeployError):
    def __init__(self, supervisor: str):
        super().__init__(f"{supervisor} failed to start service")
        self.supervisor = supervisor


class SourceFetchFailed(DeployError):
    def __init__(self, message: str = "Source fetch failed"):
        super().__init__(message)


class SupervisorUnavailable(DeployError):
    status_code = 400

    def __init__(self, supervisor: str):
        super().__init__(f"Process manager {supervisor} is not available on this host")
        self.supervisor = supervisor


class ConcurrentDeployRejected(DeployError):
    status_code = 409

    def __init__(self, service_name: str):
        super().__init__(f"Deployment already in progress for {service_name}")
        self.service_name = service_name


class InvalidServiceName(InvalidConfig):
    def __init__(self, service_name: str):
        super().__init__(f"Invalid service name: {service_name}")
        self.service_name = service_name
