"""
Shared building blocks for the workflow lifecycle service
"""
