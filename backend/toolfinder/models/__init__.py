"""
Pydantic models for the HTTP surface and shared model configuration.

Import the request/response models from ``toolfinder.models.search``; this
package init stays free of them because service schemas build on
``toolfinder.models.base``.
"""
