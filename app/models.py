from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DECIMAL,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKeyConstraint,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()
metadata = Base.metadata

APPOINTMENT_STATUSES = ("pending", "confirmed", "completed", "cancelled")
SERVICE_CATEGORIES = ("Service", "Addon", "Package")
STAFF_ROLES = ("staff", "groomer")
USER_ROLES = ("admin", "staff", "groomer")


class AuthUser(Base):
    __tablename__ = "auth_user"
    __table_args__ = (Index("email", "email", unique=True),)

    id = mapped_column(Integer, primary_key=True)
    email = mapped_column(String(255), nullable=False)
    password_hash = mapped_column(LargeBinary(72), nullable=False)
    role = mapped_column(Enum(*USER_ROLES, name="user_role"), nullable=False)
    created_at = mapped_column(DateTime, server_default=func.now())
    updated_at = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    staff: Mapped[Optional["Staff"]] = relationship(
        "Staff", uselist=False, back_populates="user"
    )


class Staff(Base):
    __tablename__ = "staff"
    __table_args__ = (
        ForeignKeyConstraint(
            ["user_id"], ["auth_user.id"], ondelete="SET NULL", name="fk_staff_user"
        ),
        Index("staff_role", "role", "is_active"),
    )

    id = mapped_column(Integer, primary_key=True)
    user_id = mapped_column(Integer)
    name = mapped_column(String(255), nullable=False)
    email = mapped_column(String(255))
    phone = mapped_column(String(50))
    role = mapped_column(
        Enum(*STAFF_ROLES, name="staff_role"), nullable=False, server_default="staff"
    )
    is_active = mapped_column(Boolean, nullable=False, server_default=text("1"))
    # Stored for scheduling screens; not enforced by the store
    max_daily_appointments = mapped_column(
        Integer, nullable=False, server_default=text("8")
    )
    created_at = mapped_column(DateTime, server_default=func.now())

    user: Mapped[Optional["AuthUser"]] = relationship("AuthUser", back_populates="staff")
    appointment: Mapped[List["Appointment"]] = relationship(
        "Appointment", uselist=True, back_populates="groomer"
    )


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (Index("customer_email", "email", unique=True),)

    id = mapped_column(Integer, primary_key=True)
    first_name = mapped_column(String(100), nullable=False)
    last_name = mapped_column(String(100))
    email = mapped_column(String(255), nullable=False)
    phone = mapped_column(String(50))
    address = mapped_column(Text)
    created_at = mapped_column(DateTime, server_default=func.now())

    pets: Mapped[List["Pet"]] = relationship(
        "Pet", uselist=True, back_populates="customer"
    )


class Pet(Base):
    __tablename__ = "pets"
    __table_args__ = (
        ForeignKeyConstraint(
            ["customer_id"], ["customers.id"], ondelete="CASCADE", name="fk_pet_customer"
        ),
        Index("fk_pet_customer", "customer_id"),
    )

    id = mapped_column(Integer, primary_key=True)
    customer_id = mapped_column(Integer, nullable=False)
    name = mapped_column(String(255), nullable=False)
    type = mapped_column(Enum("dog", "cat", "other", name="pet_type"), nullable=False)
    breed = mapped_column(String(100))
    size = mapped_column(Enum("small", "medium", "large", name="pet_size"))
    notes = mapped_column(Text)
    created_at = mapped_column(DateTime, server_default=func.now())

    customer: Mapped["Customer"] = relationship("Customer", back_populates="pets")
    appointment: Mapped[List["Appointment"]] = relationship(
        "Appointment", uselist=True, back_populates="pet"
    )


class Service(Base):
    __tablename__ = "service"

    id = mapped_column(Integer, primary_key=True, autoincrement=True)
    name = mapped_column(String(100), nullable=False)
    description = mapped_column(Text)
    category = mapped_column(
        Enum(*SERVICE_CATEGORIES, name="service_category"),
        nullable=False,
        server_default="Service",
    )
    price = mapped_column(DECIMAL(10, 2), nullable=False, server_default=text("0"))
    duration = mapped_column(Integer, nullable=False, server_default=text("30"))
    is_active = mapped_column(Boolean, nullable=False, server_default=text("1"))
    created_at = mapped_column(DateTime, server_default=func.now())
    updated_at = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    consumables: Mapped[List["ServiceConsumable"]] = relationship(
        "ServiceConsumable",
        uselist=True,
        back_populates="service",
        cascade="all, delete-orphan",
    )


class ServiceConsumable(Base):
    __tablename__ = "service_consumable"
    __table_args__ = (
        ForeignKeyConstraint(
            ["service_id"], ["service.id"], ondelete="CASCADE", name="fk_sc_service"
        ),
        ForeignKeyConstraint(
            ["item_id"], ["inventory_item.id"], ondelete="CASCADE", name="fk_sc_item"
        ),
    )

    id = mapped_column(Integer, primary_key=True)
    service_id = mapped_column(Integer, nullable=False)
    item_id = mapped_column(Integer, nullable=False)
    item_name = mapped_column(String(255), nullable=False)
    quantity_used = mapped_column(Float, nullable=False)

    service: Mapped["Service"] = relationship("Service", back_populates="consumables")


class AppointmentService(Base):
    __tablename__ = "appointment_service"
    __table_args__ = (
        ForeignKeyConstraint(
            ["appointment_id"], ["appointment.id"], ondelete="CASCADE", name="fk_as_appt"
        ),
        ForeignKeyConstraint(
            ["service_id"], ["service.id"], ondelete="RESTRICT", name="fk_as_service"
        ),
        Index("fk_as_appt", "appointment_id", "position"),
    )

    id = mapped_column(Integer, primary_key=True)
    appointment_id = mapped_column(Integer, nullable=False)
    service_id = mapped_column(Integer, nullable=False)
    position = mapped_column(Integer, nullable=False, server_default=text("0"))

    appointment: Mapped["Appointment"] = relationship(
        "Appointment", back_populates="service_links"
    )
    service: Mapped["Service"] = relationship("Service")


class Appointment(Base):
    __tablename__ = "appointment"
    __table_args__ = (
        ForeignKeyConstraint(["pet_id"], ["pets.id"], name="fk_ap_pet"),
        ForeignKeyConstraint(["customer_id"], ["customers.id"], name="fk_ap_customer"),
        ForeignKeyConstraint(["groomer_id"], ["staff.id"], name="fk_ap_groomer"),
        Index("groomer_id", "groomer_id", "date"),
        Index("customer_id", "customer_id", "date"),
    )

    id = mapped_column(Integer, primary_key=True)
    customer_id = mapped_column(Integer)
    pet_id = mapped_column(Integer, nullable=False)
    groomer_id = mapped_column(Integer)
    # Naive UTC start and end of the slot
    date = mapped_column(DateTime, nullable=False)
    end_at = mapped_column(DateTime, nullable=False)
    status = mapped_column(String(9), nullable=False, server_default="pending")
    notes = mapped_column(Text)
    total_duration = mapped_column(Integer, nullable=False, server_default=text("0"))
    total_price = mapped_column(DECIMAL(10, 2), nullable=False, server_default=text("0"))
    created_at = mapped_column(DateTime, server_default=func.now())
    updated_at = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    customer: Mapped[Optional["Customer"]] = relationship("Customer")
    pet: Mapped["Pet"] = relationship("Pet", back_populates="appointment")
    groomer: Mapped[Optional["Staff"]] = relationship(
        "Staff", back_populates="appointment"
    )
    service_links: Mapped[List["AppointmentService"]] = relationship(
        "AppointmentService",
        uselist=True,
        back_populates="appointment",
        order_by="AppointmentService.position",
        cascade="all, delete-orphan",
    )
    inventory_usage: Mapped[List["InventoryUsage"]] = relationship(
        "InventoryUsage", uselist=True, back_populates="appointment"
    )

    @property
    def services(self):
        return [link.service for link in self.service_links]

    @property
    def service_ids(self):
        return [link.service_id for link in self.service_links]


class InventoryItem(Base):
    __tablename__ = "inventory_item"
    __table_args__ = (Index("inventory_category", "category", "is_active"),)

    id = mapped_column(Integer, primary_key=True)
    name = mapped_column(String(255), nullable=False)
    description = mapped_column(Text)
    category = mapped_column(String(100), nullable=False)
    unit = mapped_column(String(50), nullable=False)
    quantity = mapped_column(Float, nullable=False, server_default=text("0"))
    minimum_quantity = mapped_column(Float, nullable=False, server_default=text("0"))
    cost_per_unit = mapped_column(DECIMAL(10, 2), nullable=False, server_default=text("0"))
    supplier = mapped_column(String(255))
    is_active = mapped_column(Boolean, nullable=False, server_default=text("1"))
    last_restock_date = mapped_column(Date)
    created_at = mapped_column(DateTime, server_default=func.now())
    updated_at = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    usage: Mapped[List["InventoryUsage"]] = relationship(
        "InventoryUsage", uselist=True, back_populates="item"
    )


class InventoryUsage(Base):
    __tablename__ = "inventory_usage"
    __table_args__ = (
        ForeignKeyConstraint(
            ["item_id"], ["inventory_item.id"], ondelete="RESTRICT", name="fk_iu_item"
        ),
        ForeignKeyConstraint(
            ["appointment_id"], ["appointment.id"], ondelete="SET NULL", name="fk_iu_appt"
        ),
        Index("fk_iu_item", "item_id", "used_at"),
        Index("fk_iu_appt", "appointment_id"),
    )

    id = mapped_column(Integer, primary_key=True)
    item_id = mapped_column(Integer, nullable=False)
    quantity_used = mapped_column(Float, nullable=False)
    service_id = mapped_column(Integer)
    appointment_id = mapped_column(Integer)
    used_by = mapped_column(String(128), nullable=False)
    notes = mapped_column(Text)
    used_at = mapped_column(DateTime, nullable=False, server_default=func.now())

    item: Mapped["InventoryItem"] = relationship("InventoryItem", back_populates="usage")
    appointment: Mapped[Optional["Appointment"]] = relationship(
        "Appointment", back_populates="inventory_usage"
    )
