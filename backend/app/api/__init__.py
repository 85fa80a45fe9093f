# @TASK P4-T4.1 - API package init

"""Document search REST API package.

Sub-modules expose FastAPI routers for each domain:
- documents: document listing, ranked search and title suggestions
"""
