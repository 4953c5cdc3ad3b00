"""Global environment options for throwaway."""
import enum
import os


class Options(enum.Enum):
    """Environment variables for throwaway."""

    # (env var name, default value)
    SHOW_DEBUG_INFO = ('THROWAWAY_DEBUG', False)
    MINIMIZE_LOGGING = ('THROWAWAY_MINIMIZE_LOGGING', False)

    def __init__(self, env_var: str, default: bool) -> None:
        self.env_var = env_var
        self.default = default

    def __repr__(self) -> str:
        return self.env_var

    def get(self) -> bool:
        """Check if an environment variable is set to True."""
        return os.getenv(self.env_var,
                         str(self.default)).lower() in ('true', '1')

