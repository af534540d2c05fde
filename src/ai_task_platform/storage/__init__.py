"""SQLite persistence shared by the task engine, credit ledger and API layer."""
