"""Payment domain - payment records and receipts"""
