"""clusterwatch exceptions."""


class ClusterwatchError(Exception):
    """Base exception for all clusterwatch errors."""
    def __init__(self, message: str, code: str = "INTERNAL_ERROR", details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


class ConfigError(ClusterwatchError):
    """Raised when a configuration file cannot be written."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, code="CONFIG_ERROR", details=details)


class ValidationError(ClusterwatchError):
    """Raised when a rule or settings update carries an invalid value."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class RuleNotFoundError(ClusterwatchError):
    """Raised when an alert rule id is unknown."""
    def __init__(self, rule_id: str):
        super().__init__(f"Rule not found: {rule_id}", code="RULE_NOT_FOUND", details={"rule_id": rule_id})


class AlertNotFoundError(ClusterwatchError):
    """Raised when an alert id is not in the active set."""
    def __init__(self, alert_id: str):
        super().__init__(f"Alert not found: {alert_id}", code="ALERT_NOT_FOUND", details={"alert_id": alert_id})
