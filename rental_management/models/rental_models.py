from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from db.base import Base
from services.clock import utc_now


def _money():
    return Numeric(12, 2, asdecimal=False)


class Vehicle(Base):
    __tablename__ = "Vehicles"
    __table_args__ = (
        UniqueConstraint("DealerID", "VehicleNumber", name="uq_vehicles_dealer_number"),
        Index("ix_vehicles_dealer_status", "DealerID", "Status"),
    )

    VehicleID = Column(Integer, primary_key=True)
    DealerID = Column(Integer, nullable=False, index=True)
    VehicleNumber = Column(String(50), nullable=False)
    Type = Column(String(100), nullable=False)
    Model = Column(String(100))
    Manufacturer = Column(String(100))
    Year = Column(Integer)
    DailyRate = Column(_money(), default=0)
    Status = Column(String(40), nullable=False, default="Available")
    Condition = Column(String(40), nullable=False, default="Good")
    # Weak reference: the rental holding the vehicle, no FK.
    CurrentRentalID = Column(Integer)
    ExpectedReturnDate = Column(DateTime)
    TotalRentalHours = Column(Integer, nullable=False, default=0)
    IsActive = Column(Boolean, nullable=False, default=True)
    CreatedDate = Column(DateTime, default=utc_now)
    UpdatedDate = Column(DateTime, default=utc_now)

    Rentals = relationship("Rental", back_populates="Vehicle")
    RentalHistory = relationship(
        "VehicleRentalHistory",
        back_populates="Vehicle",
        cascade="all, delete-orphan",
        order_by="VehicleRentalHistory.HistoryID",
    )


class VehicleRentalHistory(Base):
    __tablename__ = "VehicleRentalHistory"

    HistoryID = Column(Integer, primary_key=True)
    VehicleID = Column(Integer, ForeignKey("Vehicles.VehicleID"), nullable=False, index=True)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"), nullable=False)
    CustomerID = Column(Integer, ForeignKey("Customers.CustomerID"))
    StartDate = Column(DateTime)
    EndDate = Column(DateTime)
    ReturnCondition = Column(String(40))
    TotalHours = Column(Integer, nullable=False, default=0)
    CreatedDate = Column(DateTime, default=utc_now)

    Vehicle = relationship("Vehicle", back_populates="RentalHistory")


class Customer(Base):
    __tablename__ = "Customers"
    __table_args__ = (
        UniqueConstraint("DealerID", "CustomerNumber", name="uq_customers_dealer_number"),
        Index("ix_customers_dealer_name", "DealerID", "Name"),
        Index("ix_customers_dealer_email", "DealerID", "Email"),
    )

    CustomerID = Column(Integer, primary_key=True)
    DealerID = Column(Integer, nullable=False, index=True)
    CustomerNumber = Column(String(50), nullable=False)
    Name = Column(String(255), nullable=False)
    Email = Column(String(255), nullable=False)
    Phone = Column(String(50), nullable=False)
    BusinessType = Column(String(50), nullable=False)
    Address = Column(JSON)
    ContactPerson = Column(JSON)
    CreditLimit = Column(_money(), nullable=False, default=0)
    CurrentBalance = Column(_money(), nullable=False, default=0)
    TotalRentals = Column(Integer, nullable=False, default=0)
    Notes = Column(String(2000))
    IsActive = Column(Boolean, nullable=False, default=True)
    CreatedDate = Column(DateTime, default=utc_now)
    UpdatedDate = Column(DateTime, default=utc_now)

    Rentals = relationship("Rental", back_populates="Customer")
    RentalHistory = relationship(
        "CustomerRentalHistory",
        back_populates="Customer",
        cascade="all, delete-orphan",
        order_by="CustomerRentalHistory.HistoryID",
    )
    PaymentHistory = relationship(
        "CustomerPaymentHistory",
        back_populates="Customer",
        cascade="all, delete-orphan",
        order_by="CustomerPaymentHistory.EntryID",
    )


class CustomerRentalHistory(Base):
    __tablename__ = "CustomerRentalHistory"

    HistoryID = Column(Integer, primary_key=True)
    CustomerID = Column(Integer, ForeignKey("Customers.CustomerID"), nullable=False, index=True)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"), nullable=False)
    VehicleID = Column(Integer, ForeignKey("Vehicles.VehicleID"))
    StartDate = Column(DateTime)
    EndDate = Column(DateTime)
    ReturnCondition = Column(String(40))
    TotalAmount = Column(_money())
    PaidAmount = Column(_money(), default=0)
    CreatedDate = Column(DateTime, default=utc_now)

    Customer = relationship("Customer", back_populates="RentalHistory")


class CustomerPaymentHistory(Base):
    __tablename__ = "CustomerPaymentHistory"

    EntryID = Column(Integer, primary_key=True)
    CustomerID = Column(Integer, ForeignKey("Customers.CustomerID"), nullable=False, index=True)
    PaymentID = Column(Integer, ForeignKey("Payments.PaymentID"))
    Amount = Column(_money(), nullable=False)
    Date = Column(DateTime, nullable=False)
    Method = Column(String(50))
    Reference = Column(String(255))

    Customer = relationship("Customer", back_populates="PaymentHistory")


class Rental(Base):
    __tablename__ = "Rentals"
    __table_args__ = (
        UniqueConstraint("DealerID", "RentalNumber", name="uq_rentals_dealer_number"),
        Index("ix_rentals_dealer_status", "DealerID", "Status"),
    )

    RentalID = Column(Integer, primary_key=True)
    DealerID = Column(Integer, nullable=False, index=True)
    RentalNumber = Column(String(50), nullable=False)
    CustomerID = Column(Integer, ForeignKey("Customers.CustomerID"), nullable=False, index=True)
    VehicleID = Column(Integer, ForeignKey("Vehicles.VehicleID"), nullable=False, index=True)
    Status = Column(String(20), nullable=False, default="Active")
    StartDate = Column(DateTime, nullable=False)
    ExpectedEndDate = Column(DateTime, nullable=False)
    ActualEndDate = Column(DateTime)
    TotalAmount = Column(_money(), nullable=False, default=0)
    ReturnCondition = Column(String(40))
    ReturnNotes = Column(String(2000))
    ReturnImages = Column(JSON)
    CheckedBy = Column(String(255))
    CheckDate = Column(DateTime)
    DamageCharges = Column(_money())
    Notes = Column(String(2000))
    CreatedDate = Column(DateTime, default=utc_now)
    UpdatedDate = Column(DateTime, default=utc_now)

    Customer = relationship("Customer", back_populates="Rentals")
    Vehicle = relationship("Vehicle", back_populates="Rentals")
    Payments = relationship("Payment", back_populates="Rental", order_by="Payment.PaymentID")


class Payment(Base):
    __tablename__ = "Payments"
    __table_args__ = (
        UniqueConstraint("DealerID", "PaymentNumber", name="uq_payments_dealer_number"),
        Index("ix_payments_dealer_status_due", "DealerID", "Status", "DueDate"),
    )

    PaymentID = Column(Integer, primary_key=True)
    DealerID = Column(Integer, nullable=False, index=True)
    PaymentNumber = Column(String(50), nullable=False)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"), nullable=False, index=True)
    CustomerID = Column(Integer, ForeignKey("Customers.CustomerID"), nullable=False, index=True)
    Amount = Column(_money(), nullable=False)
    PaymentType = Column(String(40), nullable=False)
    PaymentMethod = Column(String(50), default="Pending")
    Status = Column(String(20), nullable=False, default="Pending")
    DueDate = Column(DateTime, nullable=False)
    PaidDate = Column(DateTime)
    TransactionID = Column(String(255))
    Reference = Column(String(255))
    Notes = Column(String(2000))
    LateFeeAmount = Column(_money(), nullable=False, default=0)
    LateFeeAppliedDate = Column(DateTime)
    RefundAmount = Column(_money())
    RefundReason = Column(String(1000))
    RefundMethod = Column(String(50))
    RefundProcessedDate = Column(DateTime)
    CreatedDate = Column(DateTime, default=utc_now)
    UpdatedDate = Column(DateTime, default=utc_now)

    Rental = relationship("Rental", back_populates="Payments")
    Customer = relationship("Customer")


class Alert(Base):
    __tablename__ = "Alerts"
    __table_args__ = (
        Index("ix_alerts_dealer_status", "DealerID", "Status"),
    )

    AlertID = Column(Integer, primary_key=True)
    DealerID = Column(Integer, nullable=False, index=True)
    AlertType = Column(String(50), nullable=False)
    Severity = Column(String(20), nullable=False, default="Medium")
    Title = Column(String(255), nullable=False)
    Message = Column(String(2000))
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"))
    VehicleID = Column(Integer, ForeignKey("Vehicles.VehicleID"))
    Status = Column(String(20), nullable=False, default="Active")
    CreatedDate = Column(DateTime, default=utc_now)
