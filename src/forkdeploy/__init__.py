"""forkdeploy - dependency-ordered provisioning of a protocol fork with resumable runs."""

__version__ = "0.1.0"
