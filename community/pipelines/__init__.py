"""
Community Pipelines.

Business logic orchestration functions.
"""

from community.pipelines.chat import *
from community.pipelines.overview import *
