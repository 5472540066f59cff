"""
ETL package.

├── errors.py            - Error taxonomy
├── summary.py           - Run summary (processed / rejected / written)
├── staging/             - Extract + audit stamp + land
└── warehouse/           - Calendar, dimensions (SCD2), facts, orchestrator
"""
