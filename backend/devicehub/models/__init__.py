"""Database models"""
from devicehub.models.blacklist_token import BlacklistToken
from devicehub.models.device import Device
from devicehub.models.device_log import DeviceLog
from devicehub.models.export_job import ExportJob
from devicehub.models.job_step import JobStep
from devicehub.models.user import User

__all__ = ["BlacklistToken", "Device", "DeviceLog", "ExportJob", "JobStep", "User"]
