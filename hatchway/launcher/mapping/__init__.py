"""Service mapper implementations."""

from hatchway.launcher.mapping.annotation import AnnotationServiceMapper
from hatchway.launcher.mapping.base import ServiceMapper
from hatchway.launcher.mapping.resource import MappingResourceServiceMapper

__all__ = ["AnnotationServiceMapper", "MappingResourceServiceMapper", "ServiceMapper"]
