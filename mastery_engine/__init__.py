"""
Adaptive mastery and scheduling engine.

Packages:
- core: domain models, prerequisite graph, errors
- tracing: Bayesian Knowledge Tracing
- diagnostic: binary-search placement
- session: state machine, step loop, mastery gate, orchestration
- scheduling: forgetting-curve scheduler and review sessions
- content: validated question/explanation content with fallbacks
- events: in-process event bus
- persistence: in-memory and SQLAlchemy repositories
"""

__version__ = "0.1.0"
