from setuptools import setup

setup(
    name='tabletrees',
    version='1.0',
    py_modules=[
        'binning',
        'boosting',
        'decision_table',
        'errors',
        'instances',
        'model_io',
        'regression_tree',
        'residuals',
        'scoring_index',
        'sorted_columns',
        'split_search',
        'table_builder',
        'tree_builder',
    ],
    description='Regression trees, decision tables and boosted ensembles over sorted columns',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    python_requires='>=3.10',
    install_requires=['numpy'],
    extras_require={'test': ['pytest']},
)
