"""Usage report schemas"""
from typing import List

from pydantic import BaseModel


class UsageDataset(BaseModel):
    label: str
    data: List[float]


class UsageReport(BaseModel):
    """Chart-ready series: ``labels[i]`` is the bucket for ``datasets[0].data[i]``"""

    labels: List[str]
    datasets: List[UsageDataset]
