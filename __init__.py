"""
Table Trees

Interpretable regression learners built on a sorted-column partition structure:
regression trees grown under depth, leaf-count or leaf-size limits, oblivious
decision tables built greedily, cyclically or with random backfitting, and
least-squares boosted ensembles of either.

Boosted decision tables are scored through an index that only visits the
nonzero features of an instance.
"""
