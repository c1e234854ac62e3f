"""atsgate: request governance for resume/job-description analysis.

Rate limiting, content-addressed caching and resilient calls to the
text-generation upstream.
"""

__version__ = "0.1.0"
