"""
repobundle - materialize locked dependencies, plus pip, into a repository directory.
"""
from repobundle.builder import RepositoryBuilder
from repobundle.packager import RepositoryPackager

__all__ = ["RepositoryBuilder", "RepositoryPackager"]
