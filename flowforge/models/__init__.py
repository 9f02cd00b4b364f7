"""
Database models
"""
from flowforge.models.flow import FlowGraphRecord, FlowRunRecord

__all__ = [
    'FlowGraphRecord',
    'FlowRunRecord',
]
