import re
from typing import Any, Callable, Dict, Optional

from .errors import TemplateRenderError

EXPRESSION = re.compile(r"\{\{\s*(.*?)\s*\}\}", re.DOTALL)
SECRET_CALL = re.compile(r"""^secret\(\s*(['"])(?P<name>[^'"]+)\1\s*\)$""")
PATH = re.compile(r"^[A-Za-z_][\w-]*(\.[\w-]+)*$")


class Renderer:
    """
    Renders `{{ ... }}` expressions found in task properties.

    Two expression forms are supported:
      - a dotted variable path, e.g. `{{ inputs.dataset }}` or `{{ workingDir }}`
      - a secret lookup, e.g. `{{ secret('GCP_CREDS') }}`
    Mappings and lists are rendered recursively; other scalars pass through untouched.
    """

    def __init__(self, variables: Optional[Dict[str, Any]] = None,
                 secret_lookup: Optional[Callable[[str], str]] = None):
        self.variables = variables or {}
        self.secret_lookup = secret_lookup

    def render(self, value: Any, extra: Optional[Dict[str, Any]] = None) -> Any:
        scope = dict(self.variables)
        if extra:
            scope.update(extra)
        return self._render(value, scope)

    def _render(self, value: Any, scope: Dict[str, Any]) -> Any:
        if isinstance(value, str):
            return self._render_string(value, scope)
        if isinstance(value, dict):
            return {self._render(k, scope): self._render(v, scope) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._render(v, scope) for v in value]
        return value

    def _render_string(self, text: str, scope: Dict[str, Any]) -> str:
        if "{{" not in text:
            return text
        return EXPRESSION.sub(lambda m: str(self._evaluate(m.group(1), scope)), text)

    def _evaluate(self, expression: str, scope: Dict[str, Any]) -> Any:
        secret = SECRET_CALL.match(expression)
        if secret:
            if self.secret_lookup is None:
                raise TemplateRenderError(expression, "no secret provider configured")
            try:
                return self.secret_lookup(secret.group("name"))
            except KeyError:
                raise TemplateRenderError(expression, f"secret '{secret.group('name')}' is not defined")

        if not PATH.match(expression):
            raise TemplateRenderError(expression, "unsupported expression")

        current: Any = scope
        for part in expression.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
                current = current[int(part)]
            else:
                raise TemplateRenderError(expression, f"variable '{part}' is not defined")
        return current
