"""forward-domain package"""
