"""Runtime settings resolved from the environment."""

from typing import Literal

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from pytest_checkrun.models import SettingsModel

type LogLevel = Literal['DEBUG', 'INFO', 'WARNING', 'ERROR']


class RunnerSettings(SettingsModel):
    """Settings of the test run engine.

    Values are read from `CHECKRUN_*` environment variables. Command-line
    and pytest options take precedence by passing explicit values.
    """

    model_config = SettingsConfigDict(
        env_prefix='CHECKRUN_',
        frozen=True,
        extra='ignore',
    )

    strict: bool = Field(
        default=False,
        title='Strict mode',
        description=(
            'Abort the remaining runs of a suite after a run fails '
            'with a configuration or provider error.'
        ),
    )

    timeout: float = Field(
        default=30.0,
        gt=0,
        title='Provider call timeout',
        description='Maximum number of seconds a single provider call may take.',
    )

    max_workers: int = Field(
        default=4,
        ge=1,
        title='Worker threads',
        description='Number of threads evaluating independent validations and checks.',
    )

    cleanup: bool = Field(
        default=True,
        title='Cleanup flag',
        description='Destroy resources left in state when a suite finishes.',
    )

    log_level: LogLevel = Field(
        default='WARNING',
        title='Log level',
    )

    log_format: Literal['console', 'json'] = Field(
        default='console',
        title='Log format',
    )
