ORDER_PENDING = "pending"
ORDER_CONFIRMED = "confirmed"
ORDER_PROCESSING = "processing"
ORDER_SHIPPED = "shipped"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"

PURCHASE_DRAFT = "draft"
PURCHASE_PENDING = "pending"
PURCHASE_CONFIRMED = "confirmed"
PURCHASE_PARTIALLY_RECEIVED = "partially_received"
PURCHASE_COMPLETED = "completed"
PURCHASE_CANCELLED = "cancelled"

APPROVAL_PENDING = "pending"
APPROVAL_APPROVED = "approved"
APPROVAL_REJECTED = "rejected"

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_OVERDUE = "overdue"

NOTICE_DRAFT = "draft"
NOTICE_PUBLISHED = "published"
