class SodaScanError(Exception):
    """Root of every error raised by a scan task."""


class ScanValidationError(SodaScanError):
    """Task inputs are missing or invalid. Raised before anything runs."""


class TemplateRenderError(SodaScanError):
    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Unable to render '{{{{ {expression} }}}}': {reason}")


class RunnerError(SodaScanError):
    """The task runner could not start or complete the command."""


class RunnerExitError(RunnerError):
    def __init__(self, exit_code: int, std_out_line_count: int = 0, std_err_line_count: int = 0):
        self.exit_code = exit_code
        self.std_out_line_count = std_out_line_count
        self.std_err_line_count = std_err_line_count
        super().__init__(
            f"Command failed with exit code {exit_code} "
            f"({std_out_line_count} stdout lines, {std_err_line_count} stderr lines)"
        )


class ScanResultError(SodaScanError):
    """The scan ran but its result could not be read back."""
