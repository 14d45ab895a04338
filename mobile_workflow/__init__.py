"""Mobile app workflow orchestration: LangGraph-backed plan, build, and deploy pipelines."""

__version__ = "0.1.0"
