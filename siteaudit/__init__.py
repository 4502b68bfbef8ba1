"""SiteAudit: SEO audit analysis engine and job service."""

__version__ = "0.1.0"
