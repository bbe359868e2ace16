"""
sqldelta
========

Compare relational schemas and table contents, and move portable dumps of a
database between engines.

The modules are intended to be used together via the CLI entry point:

- :mod:`sqldelta.cli`

The core is engine agnostic. It only talks to a live database through a
:class:`~sqldelta.catalog.base.Catalog`:

- :mod:`sqldelta.schema_diff` reconciles column/index/table descriptors
- :mod:`sqldelta.streams` merge-joins two ordered row streams
- :mod:`sqldelta.dumper` writes and restores ``.tgz`` dumps
"""

__version__ = "0.3.0"
