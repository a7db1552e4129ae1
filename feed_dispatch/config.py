from pathlib import Path
from typing import Dict, List, Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils.host_config import get_hostname_settings_file


class Settings(BaseSettings):
    # Deployment context (fixed for the process lifetime)
    stage: str = "beta"
    region: str = "us-east-1"
    domain: str = "test"
    realm: str = "USAmazon"

    # Job queue
    job_queue_name: str = "VendorFeedProcessorJobQueue"
    job_priority: int = 1

    # Job template (one per process)
    template_id: str = "VendorFeedProcessorJobDefinition:1"
    container_image: str = "vendor-feed-processor-batch-job:latest"
    job_vcpus: int = Field(default=1, ge=1)
    job_memory_mib: int = Field(default=512, ge=1)
    job_command: List[str] = [
        "--inputBucket",
        "Ref::inputBucket",
        "--objectKey",
        "Ref::objectKey",
    ]
    job_environment: Dict[str, str] = {}  # Template defaults; AWSRegion/DOMAIN/REALM override

    # Compute environment sizing, in vCPUs
    min_vcpus: int = Field(default=1, ge=0)
    max_vcpus: int = Field(default=8, ge=0)
    desired_vcpus: int = Field(default=0, ge=0)
    unit_vcpus: int = Field(default=1, ge=1)  # vCPUs per worker capacity unit
    unit_memory_mib: int = Field(default=2048, ge=1)

    # Scheduling and scaling timing
    scheduler_interval_seconds: float = 1.0
    scale_down_grace_seconds: float = 300.0
    provisioning_delay_seconds: float = 0.0

    # Executor backend
    executor_backend: Literal["simulated", "batch"] = "simulated"
    simulated_job_seconds: Optional[float] = 5.0  # None = run until completed manually
    batch_job_definition: str = ""
    batch_poll_interval_seconds: float = 10.0

    # Job history
    job_history_hours: int = 336  # Keep terminal jobs in memory for 14 days

    # Logging konfiguration
    log_level: str = "INFO"
    log_file_path: str = "logs/feed_dispatch.log"
    log_retention_days: int = 30

    model_config = SettingsConfigDict(env_file=get_hostname_settings_file())

    @model_validator(mode="after")
    def _check_capacity_bounds(self) -> "Settings":
        if self.min_vcpus > self.max_vcpus:
            raise ValueError(
                f"min_vcpus ({self.min_vcpus}) exceeds max_vcpus ({self.max_vcpus})"
            )
        if self.desired_vcpus > self.max_vcpus:
            raise ValueError(
                f"desired_vcpus ({self.desired_vcpus}) exceeds max_vcpus ({self.max_vcpus})"
            )
        if self.job_vcpus > self.unit_vcpus or self.job_memory_mib > self.unit_memory_mib:
            raise ValueError(
                "Job resource request does not fit in a single worker capacity unit"
            )
        if self.executor_backend == "batch" and not self.batch_job_definition:
            raise ValueError("batch_job_definition is required for the batch executor")
        return self

    @property
    def log_directory(self) -> Path:
        """Returnerer log directory som Path objekt"""
        return Path(self.log_file_path).parent

    @property
    def environment_context(self) -> dict[str, str]:
        """Fixed environment variables merged into every rendered job."""
        return {
            "AWSRegion": self.region,
            "DOMAIN": self.domain,
            "REALM": self.realm,
        }

    @property
    def config_file_info(self) -> dict:
        """Return information about which configuration file is being used."""
        from .utils.host_config import get_hostname, list_all_settings_files

        return {
            "hostname": get_hostname(),
            "active_config_file": get_hostname_settings_file(),
            "all_available_configs": list_all_settings_files(),
        }
